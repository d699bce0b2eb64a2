"""Recipe compilation: script IR, tool backends, compiler and generator."""
