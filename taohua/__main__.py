"""Allow ``python -m taohua``."""

from taohua.main import main

main()
