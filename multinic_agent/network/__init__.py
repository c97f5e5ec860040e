"""Host network configuration: environment probing, netplan generation and apply."""
