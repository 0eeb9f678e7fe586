"""A case module that forgets to export its agent."""

run_options = {"prompt": "hello"}
