from canopy_iiif.build import main

raise SystemExit(main())
