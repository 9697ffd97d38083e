from sqlcp.cli import entry

entry()
