"""Domain core: route table, header codec, errors."""
