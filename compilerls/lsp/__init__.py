"""LSP protocol layer: transport, session and server wiring."""
