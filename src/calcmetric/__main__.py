from calcmetric.cli import main

raise SystemExit(main())
