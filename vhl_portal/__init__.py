"""VHL Abroad student portal: access control and timed exams."""
