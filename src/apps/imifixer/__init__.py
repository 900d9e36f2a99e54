"""Watch-folder tool that restores published IMI values in TVA schedules."""
