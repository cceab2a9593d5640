from zbmigrate.modules.cli import main

raise SystemExit(main())
