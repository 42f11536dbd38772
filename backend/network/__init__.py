"""Registry network analysis: fetching, graph construction, traversal and resolvers."""
