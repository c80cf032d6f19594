"""
Storyboard generation worker.

Submits image, video and text generations to Luma, fal.ai and Claude,
tracks them in Supabase, and reconciles poll and webhook results into the
owning shot, character or scene rows.
"""
