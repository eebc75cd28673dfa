"""Entry point for `python -m heimdizzy`."""

from heimdizzy.tool.heimdizzy import main

if __name__ == "__main__":
    main()
