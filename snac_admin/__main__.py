from snac_admin.cli import main

raise SystemExit(main())
