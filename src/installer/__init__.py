"""Component installer: planning, graph walking and per-component lifecycle."""
