"""Team engine: registry, mailboxes, task graph, supervision, liveness and shutdown."""
