"""Server package for the Spectra MCP bridge: tool contract, catalog, registry and handlers."""
