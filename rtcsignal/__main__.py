from __future__ import annotations

from rtcsignal.run import cli

if __name__ == '__main__':
    cli()
