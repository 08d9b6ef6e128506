"""Entry point for running the gitedit server via python -m gitedit_server"""

from .http_facade import main

if __name__ == "__main__":
    main()
