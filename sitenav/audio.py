"""Text-to-speech for guidance announcements."""

import subprocess


class Audio:
    """Speaks guidance text with espeak, falling back to pyttsx3 or stdout"""

    @staticmethod
    def speak(text: str):
        try:
            subprocess.run(
                ["espeak", "-s", "150", text],
                capture_output=True,
                timeout=10
            )
        except FileNotFoundError:
            try:
                import pyttsx3
                engine = pyttsx3.init()
                engine.say(text)
                engine.runAndWait()
            except (ImportError, RuntimeError, OSError):
                print(f"[AUDIO] {text}")
        except subprocess.SubprocessError as e:
            print(f"Audio error: {e}")
            print(f"[AUDIO] {text}")


class TextAudio:
    """Prints announcements instead of speaking them"""

    def __init__(self):
        self.spoken: list[str] = []

    def speak(self, text: str):
        self.spoken.append(text)
        print(f"[AUDIO] {text}")
