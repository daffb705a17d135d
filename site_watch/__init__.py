"""Website uptime watcher: polls registered URLs and alerts owners over Telegram when they go down."""
