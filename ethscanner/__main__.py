from ethscanner.cli import cli

cli()
