import asyncio

from netorch.worker import main

asyncio.run(main())
