"""
Command line entrypoints, built from function docstrings with docopt -- see `utils.entrypoint`.
"""
