"""Park and stay recommendations over national parks, species, trails and listings."""
