# =======================================================================================
# smartgrid/services/__init__.py - Services Package
# =======================================================================================
# Import services from their modules directly (smartgrid.services.replacement, ...);
# utils.validators depends on identifier_codec, so nothing is re-exported here.
