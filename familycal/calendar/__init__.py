"""Feed ingestion: fetching, parsing, recurrence expansion and occurrence building."""
