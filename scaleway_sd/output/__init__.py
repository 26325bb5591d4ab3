"""Output sinks for published target group batches."""
