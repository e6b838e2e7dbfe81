import sys

from machine_factory.codegen import main

sys.exit(main())
