#!/usr/bin/env python
"""
Tagdash - tag-driven dashboard over Gmail, Google Calendar and project cards
Main entry point for the Flask application
"""
import os
from tagdash import create_app

if __name__ == '__main__':
    app = create_app()

    # Run development server
    debug = os.getenv('FLASK_ENV') == 'development'
    app.run(debug=debug, host='0.0.0.0', port=int(os.getenv('PORT', 5000)))
