"""Release lookup clients."""
