from skproxy.cli import main

raise SystemExit(main())
