"""Role-based access control for admins and voters."""
