"""Domain services: registry, signing, dispatch and delivery."""
