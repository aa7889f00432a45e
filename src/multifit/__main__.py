from multifit.cli import main

raise SystemExit(main())
