"""Update cycle coordination and workload restarts."""
