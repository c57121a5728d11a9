"""
Course catalog: courses, bundles and enrollments.

Author: Academy Development Team
Version: 1.0.0
"""
