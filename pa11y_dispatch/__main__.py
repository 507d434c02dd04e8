from pa11y_dispatch.cli import cli

cli()
