from confluence_mcp.cli import main

raise SystemExit(main())
