from remotetask.run import main

raise SystemExit(main())
