from site_watch.main import main


raise SystemExit(main())
