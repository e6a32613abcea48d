"""HTTP application: dispatcher, proxy, ambient stack."""
