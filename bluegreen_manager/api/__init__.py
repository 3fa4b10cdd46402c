"""HTTP trigger surface for the blue-green manager."""
