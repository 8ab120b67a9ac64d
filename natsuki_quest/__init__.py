"""Return by Death game engine: checkpoints, rewinds and AI-narrated turns."""
