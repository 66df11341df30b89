from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, JSON, ForeignKey
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Framework(Base):

    __tablename__ = "frameworks"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    level = Column(String(32), nullable=False, default="beginner")
    duration = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False, default="not_started")
    case_studies = Column(Text, nullable=True)

    modules = relationship("Module", back_populates="framework", order_by="Module.order")
    quizzes = relationship("Quiz", back_populates="framework")


class Module(Base):

    __tablename__ = "modules"

    id = Column(Integer, primary_key=True)
    framework_id = Column(Integer, ForeignKey("frameworks.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    content = Column(Text, nullable=True)
    examples = Column(Text, nullable=True)
    key_takeaways = Column(Text, nullable=True)
    order = Column(Integer, nullable=False)
    # shared across users, see DESIGN.md
    completed = Column(Boolean, nullable=False, default=False)

    framework = relationship("Framework", back_populates="modules")


class Quiz(Base):

    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True)
    framework_id = Column(Integer, ForeignKey("frameworks.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    level = Column(String(32), nullable=False)
    questions = Column(Text, nullable=False, default="[]")
    question_count = Column(Integer, nullable=False, default=0)
    time_limit = Column(Integer, nullable=False, default=600)
    passing_score = Column(Integer, nullable=False, default=70)
    is_active = Column(Boolean, nullable=False, default=True)

    framework = relationship("Framework", back_populates="quizzes")


class QuizAttempt(Base):

    __tablename__ = "quiz_attempts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), nullable=False, index=True)
    answers = Column(JSON, nullable=False)
    score = Column(Integer, nullable=False)
    max_score = Column(Integer, nullable=False)
    passed = Column(Boolean, nullable=False)
    time_taken = Column(Integer, nullable=True)
    completed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class GenerationCheckpoint(Base):

    __tablename__ = "generation_checkpoints"

    name = Column(String(64), primary_key=True)
    framework_index = Column(Integer, nullable=False, default=0)
    framework_id = Column(Integer, nullable=True)
    level = Column(String(32), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
