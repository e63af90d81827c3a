"""Application services behind the billing API routers."""
