"""prcomments: triage GitHub pull request review comments over MCP."""
