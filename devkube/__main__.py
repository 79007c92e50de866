from devkube.cli import cli

cli()
