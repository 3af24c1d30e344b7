"""Narrow wrappers around the block-device, filesystem and LVM command line tools."""
