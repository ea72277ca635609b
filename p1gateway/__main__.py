from p1gateway.cli import main

raise SystemExit(main())
