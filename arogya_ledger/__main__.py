from __future__ import annotations

from arogya_ledger.server import main

if __name__ == "__main__":
    main()
