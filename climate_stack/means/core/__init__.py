"""Core processing for monthly means and unit scheduling."""
