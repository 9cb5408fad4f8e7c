"""Books: per-owner collection management with optional cover images."""
