# =======================================================================================
# smartgrid/api/routes/__init__.py - API Routes
# =======================================================================================
